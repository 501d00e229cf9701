import truststore
truststore.inject_into_ssl()

from dotenv import load_dotenv
load_dotenv()

from service.service import app, create_app

__all__ = ["app", "create_app"]
