"""Unit tests for A/B variant assignment."""

import pytest

from outreach_engine.services.variants import assign_variant, bucket


class TestVariantAssignment:

    def test_bucket_is_in_unit_interval(self):
        for index in range(50):
            value = bucket(f"lead-{index}", "test-1")
            assert 0.0 <= value < 1.0

    def test_assignment_is_deterministic(self):
        variants = [{'id': 'a', 'weight': 50}, {'id': 'b', 'weight': 50}]
        first = assign_variant('lead-1', 'test-1', variants)
        for _ in range(5):
            assert assign_variant('lead-1', 'test-1', variants) == first

    def test_single_variant_always_wins(self):
        assert assign_variant('lead-1', 'test-1', [{'id': 'only', 'weight': 10}]) == 'only'

    def test_zero_weight_variant_never_chosen(self):
        variants = [{'id': 'a', 'weight': 0}, {'id': 'b', 'weight': 100}]
        for index in range(100):
            assert assign_variant(f"lead-{index}", 'test-1', variants) == 'b'

    def test_split_converges_to_weights(self):
        variants = [{'id': 'a', 'weight': 80}, {'id': 'b', 'weight': 20}]
        counts = {'a': 0, 'b': 0}
        for index in range(2000):
            counts[assign_variant(f"lead-{index}", 'test-1', variants)] += 1
        share = counts['a'] / 2000.0
        assert 0.75 < share < 0.85

    def test_empty_variants_rejected(self):
        with pytest.raises(ValueError):
            assign_variant('lead-1', 'test-1', [])

    def test_non_positive_total_rejected(self):
        with pytest.raises(ValueError):
            assign_variant('lead-1', 'test-1', [{'id': 'a', 'weight': 0}])
