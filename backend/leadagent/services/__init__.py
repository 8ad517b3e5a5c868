"""Agent services: task engine, handlers, quota ledger, tuner and provider clients."""
