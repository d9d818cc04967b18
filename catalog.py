"""Static catalog of healthcare applications and their endpoints.

Configurations only store an ``applicationId`` and endpoint ids; names and
paths are resolved here.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Endpoint:
    id: str
    method: str
    path: str


@dataclass(frozen=True)
class Application:
    id: str
    name: str
    icon: str
    color: str
    endpoints: List[Endpoint] = field(default_factory=list)

    @property
    def api_count(self) -> int:
        return len(self.endpoints)

    def endpoint(self, endpoint_id: str) -> Optional[Endpoint]:
        for ep in self.endpoints:
            if ep.id == endpoint_id:
                return ep
        return None


def _endpoints(*routes):
    return [Endpoint(id=f"ep-{i}", method=m, path=p) for i, (m, p) in enumerate(routes, start=1)]


APPLICATIONS: Dict[str, Application] = {
    app.id: app
    for app in (
        Application(
            id="cdr-clinical",
            name="CDR Clinical API",
            icon="Stethoscope",
            color="blue",
            endpoints=_endpoints(
                ("GET", "/api/v1/patients"),
                ("POST", "/api/v1/patients"),
                ("GET", "/api/v1/patients/{id}/records"),
                ("PUT", "/api/v1/patients/{id}/records"),
                ("GET", "/api/v1/appointments"),
                ("POST", "/api/v1/appointments"),
                ("GET", "/api/v1/billing/invoices"),
                ("DELETE", "/api/v1/patients/{id}"),
            ),
        ),
        Application(
            id="clinical-data",
            name="Clinical Data API",
            icon="Activity",
            color="green",
            endpoints=_endpoints(
                ("POST", "/api/v1/encounters"),
                ("POST", "/api/v1/observations"),
            ),
        ),
        Application(
            id="insurance-claims",
            name="Insurance Claims API",
            icon="FileText",
            color="purple",
            endpoints=_endpoints(
                ("POST", "/api/v1/claims"),
                ("POST", "/api/v1/eligibility"),
            ),
        ),
        Application(
            id="pharmacy-network",
            name="Pharmacy Network API",
            icon="Pill",
            color="orange",
            endpoints=_endpoints(
                ("POST", "/api/v1/prescriptions"),
                ("POST", "/api/v1/dispensations"),
            ),
        ),
        Application(
            id="member-portal",
            name="Member Portal API",
            icon="Users",
            color="pink",
            endpoints=_endpoints(
                ("POST", "/api/v1/members"),
                ("POST", "/api/v1/messages"),
            ),
        ),
        Application(
            id="provider-directory",
            name="Provider Directory API",
            icon="Building2",
            color="teal",
            endpoints=_endpoints(
                ("POST", "/api/v1/providers"),
            ),
        ),
    )
}


def get_application(app_id: str) -> Optional[Application]:
    return APPLICATIONS.get(app_id)
