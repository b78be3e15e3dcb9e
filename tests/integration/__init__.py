"""Integration tests for the voting API.

This package contains integration tests run against the docker-compose stack
(API on PostgreSQL and Redis), including:

- API endpoint validation
- End-to-end vote flow with database verification
- Double-vote prevention under concurrency
- Real-time WebSocket updates

All tests require the docker-compose stack to be running.
"""
