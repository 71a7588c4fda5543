"""Well-known label and annotation keys.

The exact strings are a compatibility surface: resources created by older
operator versions keep their labels forever, so values are only ever added,
never renamed.
"""

__all__ = (
    "DATACENTER_ANNOTATION",
    "DATACENTER_LABEL",
    "DATACENTER_GROUP",
    "DATACENTER_KIND",
    "DATACENTER_PLURAL",
    "DATACENTER_VERSION",
    "MANAGED_BY_LABEL",
    "MANAGED_BY_LABEL_DEFUNCT_VALUE",
    "MANAGED_BY_LABEL_VALUE",
    "MANAGED_BY_VALUES",
)

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
"""Label key marking a resource as created by this operator."""

MANAGED_BY_LABEL_VALUE = "cass-operator"
"""Current value of the managed-by label."""

MANAGED_BY_LABEL_DEFUNCT_VALUE = "cass-operator-defunct"
"""Value of the managed-by label set by older operator versions."""

MANAGED_BY_VALUES = frozenset(
    (MANAGED_BY_LABEL_VALUE, MANAGED_BY_LABEL_DEFUNCT_VALUE)
)

DATACENTER_LABEL = "cassandra.datastax.com/datacenter"
"""Label whose value is the name of the owning CassandraDatacenter."""

DATACENTER_ANNOTATION = "cassandra.datastax.com/datacenter"
"""Annotation on user-managed config secrets naming the CassandraDatacenter
that consumes them.
"""

DATACENTER_GROUP = "cassandra.datastax.com"
DATACENTER_VERSION = "v1beta1"
DATACENTER_PLURAL = "cassandradatacenters"
DATACENTER_KIND = "CassandraDatacenter"
