"""HTTP API for Card Provisioning Service."""
