"""YAML rendering for the Kubernetes manifests this package writes."""

from __future__ import annotations

import io
import typing as typ

from ruamel.yaml import YAML

MANAGED_BY_LABELS = {"app.kubernetes.io/managed-by": "k3d_gitops"}


def to_yaml(*documents: typ.Mapping[str, typ.Any]) -> str:
    """Serialise one or more manifests into a YAML stream.

    Multiple documents are separated with ``---`` so the result can be fed to
    ``kubectl apply -f -`` in one call.
    """
    yaml_serializer = YAML(typ="safe")
    yaml_serializer.default_flow_style = False
    yaml_serializer.indent(mapping=2, sequence=4, offset=2)
    with io.StringIO() as stream:
        yaml_serializer.dump_all([dict(doc) for doc in documents], stream)
        return stream.getvalue()
