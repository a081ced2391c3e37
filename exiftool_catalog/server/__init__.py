"""HTTP server and process lifecycle for the tag catalog service.

WHY: The streaming pipeline needs an HTTP surface and a supervisor that
stops in-flight extractor processes when the service shuts down.

HOW: app.py builds the FastAPI application, models.py holds the Pydantic
schemas used for OpenAPI docs, lifecycle.py runs uvicorn and handles
termination signals.
"""
