"""
Soil Backend Connector
Thin REST client for the soil/parameter backend's create, read and delete endpoints
"""
from typing import Any, Dict, List, Optional
import logging
import math

import requests

from .base_connector import BaseAPIConnector, APIConfig
from cloudtree_core.errors import IdentityMappingError
from cloudtree_core.offline.id_mapper import id_to_number, is_backend_id
from cloudtree_core.offline.models import (
    CreateSoilRequest,
    Parameter,
    Soil,
    UpdateParameterRequest,
)

logger = logging.getLogger(__name__)


class SoilAPIConnector(BaseAPIConnector):
    """
    Remote gateway for the soil backend.

    Endpoints:
        GET    /soils
        GET    /soils/parameters/{n}
        POST   /create/soil/
        POST   /add/parameter/
        DELETE /delete/parameter/{n}
        DELETE /delete/soil/{n}

    Backend ids (S0001, P0001) travel as their numeric suffix only. Callers
    pass backend ids; translating local ids is the identity mapper's job.
    """

    def __init__(self, config: APIConfig, session: Optional[requests.Session] = None):
        super().__init__(config, session)

    def validate_response(self, response: requests.Response) -> bool:
        return 200 <= response.status_code < 300

    def _numeric_id(self, backend_id: str) -> int:
        number = id_to_number(backend_id)
        if isinstance(number, float) and math.isnan(number):
            raise IdentityMappingError(
                f"Invalid backend id format: {backend_id}",
                entity_id=backend_id,
            )
        return number

    def _numeric_soil_reference(self, soil_id: str) -> str:
        """Soil_ID for request bodies: a numeric string ("S0003" or "3" -> "3")."""
        if soil_id.isdigit():
            return str(int(soil_id))
        if is_backend_id(soil_id):
            return str(self._numeric_id(soil_id))
        raise IdentityMappingError(
            f"Soil {soil_id} has no backend id; it must be synced first",
            entity_id=soil_id,
            entity_type="soil",
        )

    # GET FUNCTIONS

    def get_soils(self) -> List[Soil]:
        """All soils known to the backend, in backend (append) order"""
        endpoint = "soils"
        response = self._make_request(endpoint)
        soils = self._decode_records(response, endpoint, Soil.from_api)
        logger.debug(f"Fetched {len(soils)} soils from backend")
        return soils

    def get_parameters(self, soil_id: str) -> List[Parameter]:
        """Readings of one backend soil, in backend (append) order"""
        endpoint = f"soils/parameters/{self._numeric_id(soil_id)}"
        response = self._make_request(endpoint)
        parameters = self._decode_records(response, endpoint, Parameter.from_api)
        logger.debug(f"Fetched {len(parameters)} parameters for soil {soil_id}")
        return parameters

    # POST FUNCTIONS

    def create_soil(self, request: CreateSoilRequest) -> Dict[str, Any]:
        """
        Create a soil together with its first reading.

        Returns:
            The decoded response body. The backend echoes the payload and may
            or may not include the assigned Soil_ID / Parameter_ID.
        """
        endpoint = "create/soil/"
        response = self._make_request(endpoint, method="POST", data=request.to_api())
        body = self._json(response, endpoint)
        return body if isinstance(body, dict) else {}

    def add_parameter(self, request: UpdateParameterRequest) -> Dict[str, Any]:
        """Add a reading to an existing backend soil."""
        endpoint = "add/parameter/"
        payload = {
            "Soil_ID": self._numeric_soil_reference(request.soil_id),
            "Parameters": request.parameters.to_api(),
        }
        response = self._make_request(endpoint, method="POST", data=payload)
        body = self._json(response, endpoint)
        return body if isinstance(body, dict) else {}

    # DELETE FUNCTIONS

    def delete_parameter(self, parameter_id: str) -> None:
        self._make_request(f"delete/parameter/{self._numeric_id(parameter_id)}", method="DELETE")
        logger.info(f"Parameter {parameter_id} deleted on backend")

    def delete_soil(self, soil_id: str) -> None:
        """Delete a soil and all of its parameters on the backend"""
        self._make_request(f"delete/soil/{self._numeric_id(soil_id)}", method="DELETE")
        logger.info(f"Soil {soil_id} deleted on backend")
