"""
Viewer API package for FlexTrace.

FastAPI application serving trace records and reconstructed timelines.
"""
