"""
Core logic for session artifact storage.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or any infrastructure concerns. The object store is reached only through
the protocol in core.sessions.store, so the transfer logic can be tested
against the in-memory store.
"""
