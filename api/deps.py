from fastapi import Request

from services.pipeline import ApplicationPipeline


def get_pipeline(request: Request) -> ApplicationPipeline:
    """The pipeline built in the app lifespan."""
    return request.app.state.pipeline
