"""Simulation core: event loop, ledgers, orders and event-fed statistics.

Provides the daily replay loop, cash and brokerage ledgers, order lifecycle,
and the statistics / return-on-investment listeners fed by simulation events.
"""
