CRD_GROUP = "openebs.io"
CRD_VERSION = "v1alpha1"

CRD_PLURAL_CASTEMPLATE = "castemplates"
CRD_PLURAL_RUNTASK = "runtasks"
CRD_PLURAL_UPGRADERESULT = "upgraderesults"

# Labels that identify the UpgradeResult for one (job, item) pair.
LABEL_JOB_NAME = "upgradejob.openebs.io/name"
LABEL_ITEM_NAME = "upgradeitem.openebs.io/name"
LABEL_ITEM_NAMESPACE = "upgradeitem.openebs.io/namespace"
LABEL_ITEM_KIND = "upgradeitem.openebs.io/kind"
