"""AWS Lambda entry point: Mangum wraps the FastAPI app for API Gateway."""

from mangum import Mangum

from booking_api.main import app

handler = Mangum(app, lifespan="off")
