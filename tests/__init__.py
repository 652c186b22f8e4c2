"""
Testing package for the outreach engine.

This package contains:
- Unit tests for condition evaluation, rate limiting and variant assignment
- Engine tests for triggers, enrollments and the sweep
- Integration tests for API endpoints
"""
