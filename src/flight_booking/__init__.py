"""Flight search, pricing and booking orchestration over the Benzy supplier API."""
