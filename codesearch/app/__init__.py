"""Application layer: ports, adapters and the services that orchestrate them."""
