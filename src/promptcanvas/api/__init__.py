"""PromptCanvas FastAPI REST API layer.

This package contains the FastAPI application factory and the Pydantic
request models for the history API.

Modules
-------
main
    Application factory, history and image proxy routes, and the
    ``main()`` CLI entry point.
models
    Pydantic models for request validation.
"""
