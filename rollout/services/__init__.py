"""Pipeline services: version resolution, environment registry and rollout."""
