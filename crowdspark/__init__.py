"""
CrowdSpark backend package.

A FastAPI application for the crowdfunding platform: accounts, campaigns,
contribution recording, invoices and real-time notifications, with storage,
payment and notification abstractions that fall back to in-memory
implementations for local runs and tests.
"""
