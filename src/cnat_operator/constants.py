API_GROUP = "cnat.programming-kubernetes.info"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

KIND_AT = "At"
PLURAL_AT = "ats"
KIND_POD = "Pod"

FIELD_MANAGER = "cnat-operator"

# Label keys
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"
LABEL_OWNER_KIND = f"{API_GROUP}/owner-kind"
LABEL_OWNER_NAME = f"{API_GROUP}/owner-name"
LABEL_OWNER_UID = f"{API_GROUP}/owner-uid"

# At phases
PHASE_PENDING = "PENDING"
PHASE_RUNNING = "RUNNING"
PHASE_DONE = "DONE"

# Pod phases that end a run
POD_SUCCEEDED = "Succeeded"
POD_FAILED = "Failed"
POD_TERMINAL_PHASES = frozenset({POD_SUCCEEDED, POD_FAILED})

POD_NAME_SUFFIX = "-pod"
