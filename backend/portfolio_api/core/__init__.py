"""Request pipeline core: envelope, routing, middleware chain, faults, driver."""
