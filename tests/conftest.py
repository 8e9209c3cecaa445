import pytest

import mutate


REQUIRED_AFFINITY = {
    "nodeAffinity": {
        "requiredDuringSchedulingIgnoredDuringExecution": {
            "nodeSelectorTerms": [
                {
                    "matchExpressions": [
                        {
                            "key": "node.kubernetes.io/capacity",
                            "operator": "In",
                            "values": ["on-demand"],
                        }
                    ]
                }
            ]
        }
    }
}

PREFERRED_AFFINITY = {
    "nodeAffinity": {
        "preferredDuringSchedulingIgnoredDuringExecution": [
            {
                "weight": 10,
                "preference": {
                    "matchExpressions": [
                        {
                            "key": "node.kubernetes.io/capacity",
                            "operator": "In",
                            "values": ["spot"],
                        }
                    ]
                },
            }
        ]
    }
}


def admission_request(uid, pod=None, api_version="admission.k8s.io/v1"):
    if pod is None:
        pod = {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": "testpod", "namespace": "default"},
            "spec": {"containers": [{"name": "app", "image": "busybox"}]},
        }

    return {
        "apiVersion": api_version,
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "kind": {"group": "", "version": "v1", "kind": "Pod"},
            "namespace": "default",
            "operation": "CREATE",
            "object": pod,
        },
    }


@pytest.fixture()
def app():
    app = mutate.create_app(TESTING=True)
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()
