"""
Azure Functions entry point.

The Functions host imports this module and indexes every function registered
on ``app``.
"""

import azure.functions as func

from dps_allocation.function_app import bp

app = func.FunctionApp()
app.register_functions(bp)
