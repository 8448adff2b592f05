"""I/O and orchestration: market data, tick engine, persistence and API."""
