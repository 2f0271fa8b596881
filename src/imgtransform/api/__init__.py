"""imgtransform - FastAPI HTTP layer.

Modules
-------
main
    FastAPI application factory, routes and the ``main()`` CLI entry point.
responses
    Mapping of transform outcomes to HTTP responses.
"""
