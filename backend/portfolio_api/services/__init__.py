"""
Portfolio API — Services Layer
===============================

Service Inventory:
    - RateLimiter / RateLimitStore: sliding-window request accounting
    - ContactService: contact message persistence and statistics
    - EmailService: owner notification via EmailJS or SMTP
"""
