"""HTTP server for the NetDefender engine."""
