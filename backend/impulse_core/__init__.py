"""Core shared logic for impulse detection, trade lifecycle and prediction tracking.

This package contains pure business logic with no I/O dependencies
(no network, no disk access). The live tick engine in impulse_app/
and the historical replay in impulse_core.backtest both build on it.
"""
