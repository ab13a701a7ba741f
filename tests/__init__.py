"""
consul-backup Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Pipeline tests (in-memory Consul), plus real-agent tests
  enabled with CONSUL_BACKUP_AGENT_TESTS=1
"""
