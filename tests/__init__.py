"""
Map square renderer test suite.

Structure:
- unit/: Unit tests for individual components
- integration/: HTTP contract and end-to-end render scenarios
- helpers.py: fake HTTP session and in-memory PNG fixtures (no network)
"""
