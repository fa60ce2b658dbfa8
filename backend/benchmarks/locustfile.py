import os
import uuid

from locust import HttpUser, task, between

PROJECT_UID = os.getenv("BENCH_PROJECT_UID", "bench-project")
USER_ID = os.getenv("BENCH_USER_ID", "1")


def _point(lon: float = 72.8777, lat: float = 19.0760) -> dict:
    return {"type": "Feature", "properties": {}, "geometry": {"type": "Point", "coordinates": [lon, lat]}}


class FieldUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-User-Id": USER_ID}
        self.base = f"/api/projects/{PROJECT_UID}/interventions"

    @task(3)
    def create_single_tree(self):
        data = {
            "type": "single-tree-registration",
            "intervention_start_date": "2024-03-01T00:00:00Z",
            "intervention_end_date": "2024-03-01T00:00:00Z",
            "geometry": _point(),
            "species": [{"is_unknown": True, "species_count": 1}],
        }
        self.client.post(self.base, json=data, headers=self.headers)

    @task(1)
    def bulk_fencing(self):
        ring = [[72.0, 19.0], [72.1, 19.0], [72.1, 19.1], [72.0, 19.0]]
        records = [
            {
                "client_id": f"bench-{uuid.uuid4().hex[:12]}",
                "type": "fencing",
                "intervention_start_date": "2024-03-01T00:00:00Z",
                "intervention_end_date": "2024-03-02T00:00:00Z",
                "geometry": {"type": "Polygon", "coordinates": [ring]},
            }
            for _ in range(25)
        ]
        self.client.post(f"{self.base}/bulk", json=records, headers=self.headers)
