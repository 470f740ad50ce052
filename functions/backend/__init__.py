"""
Self-hosted JanSahyog backend.

Serves the civic-issue REST API with FastAPI, persists issues, users and
notifications through the database clients, keeps photos in object storage
and hands new issues to the triage worker over a Redis queue.
"""
