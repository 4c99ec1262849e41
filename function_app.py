"""Azure Functions V2 entry point — registers blueprints from src/."""

import os
import sys

# Add src/ to Python path so that Azure Functions runtime can resolve
# the permission_mirror package from the src/ layout.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

import azure.durable_functions as df
import azure.functions as func

from permission_mirror.functions.http_trigger import bp as http_bp
from permission_mirror.functions.orchestrators import bp as orchestrators_bp
from permission_mirror.functions.timer_trigger import bp as timer_bp
from permission_mirror.functions.webhooks import bp as webhooks_bp

app = df.DFApp(http_auth_level=func.AuthLevel.FUNCTION)
app.register_functions(orchestrators_bp)
app.register_functions(timer_bp)
app.register_functions(webhooks_bp)
app.register_functions(http_bp)
