"""CourseHub API application package.

Layers follow the request path: ``api`` (FastAPI routers), ``services``
(course, user and media operations), ``domain`` (pydantic models),
``infrastructure`` (MongoDB, Redis, upload storage) and ``core``
(config, auth, errors, logging).
"""
