"""
Basic Dune Client Class responsible for refreshing Dune Queries
Framework built on Dune's API Documentation
https://docs.dune.com/api-reference/overview/introduction
"""

from duners.api.extensions import ExtendedAPI


class DuneClient(ExtendedAPI):
    """
    An interface for Dune API with a few convenience methods
    combining the use of endpoints (e.g. refresh)

    Inheritance Hierarchy sketched as follows:

        DuneClient
        |
        |--- ExtendedAPI
                |   - Contains compositions of execution methods
                |               (things like `refresh`, `run_query`, etc..)
                |
                |--- ExecutionAPI(BaseRouter)
                        - Contains query execution methods.
    """
