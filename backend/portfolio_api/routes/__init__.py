"""
Portfolio API — Route Modules
==============================

What:  Controllers plus a `register()` function per resource that binds them
       into the Router.

Route Inventory:
    - health.py:   GET /health, GET /
    - contact.py:  /api/contact endpoints (submission and admin views)

Routes stay thin: read the current request, call a service, shape the result.
"""
