"""oslo.config options for hosts that embed the subnet operator.

The standalone agent reads YAML (see :mod:`subnet_agent.config`) and, when
given an oslo.config file, takes its allocation, lease and reconcile settings
from these options instead.  Services already configured through oslo.config
register the options and build a reconciler from them.
"""

from oslo_config import cfg

from capa_subnet.config import (
    DEFAULT_PARENT_CIDR,
    DEFAULT_SUBNET_PREFIX_LENGTH,
    AllocationSettings,
)
from capa_subnet.lock import DEFAULT_LEASE_DURATION, LeaseLock
from capa_subnet.service import SubnetService
from subnet_operator.reconciler import DEFAULT_REQUEUE_AFTER, NodePoolReconciler

GROUP = 'subnet_allocation'

subnet_opts = [
    cfg.StrOpt('parent_cidr',
               default=DEFAULT_PARENT_CIDR,
               help='Range every node pool subnet block is carved from.'),
    cfg.IntOpt('subnet_prefix_length',
               default=DEFAULT_SUBNET_PREFIX_LENGTH,
               min=0,
               max=128,
               help='Prefix length of the block reserved for each node pool. '
                    'The block is split evenly across the pool\'s '
                    'availability zones.'),
    cfg.FloatOpt('reconcile_interval',
                 default=DEFAULT_REQUEUE_AFTER,
                 help='Seconds between reconcile passes over all node pools.'),
    cfg.FloatOpt('lease_duration',
                 default=DEFAULT_LEASE_DURATION,
                 help='Seconds a cluster allocation lease stays valid if its '
                      'holder stops renewing it.'),
    cfg.StrOpt('watch_filter',
               default=None,
               help='Only reconcile node pools whose '
                    'cluster.x-k8s.io/watch-filter label has this value. '
                    'Unset means every node pool.'),
]


def register_subnet_opts(conf=None):
    """Register the subnet allocation options on ``conf`` (default: global CONF)."""
    conf = conf if conf is not None else cfg.CONF
    conf.register_opts(subnet_opts, group=GROUP)
    return conf


def settings_from_conf(conf=None):
    """Build :class:`AllocationSettings` from registered options.

    Raises InvalidRequest if the prefix length does not fit the parent range.
    """
    conf = conf if conf is not None else cfg.CONF
    group = conf[GROUP]
    return AllocationSettings(
        parent_cidr=group.parent_cidr,
        subnet_prefix_length=group.subnet_prefix_length,
    )


def lock_from_conf(store, holder_identity, conf=None):
    """Build the cluster :class:`LeaseLock` honouring ``lease_duration``."""
    conf = conf if conf is not None else cfg.CONF
    return LeaseLock(
        store,
        holder_identity,
        lease_duration=conf[GROUP].lease_duration,
    )


def reconciler_from_conf(store, provider, holder_identity, conf=None):
    """Wire a :class:`NodePoolReconciler` from the ``subnet_allocation`` group.

    ``reconcile_interval`` becomes the requeue delay and ``watch_filter``
    restricts which node pools are handled.
    """
    conf = conf if conf is not None else cfg.CONF
    group = conf[GROUP]
    service = SubnetService(
        store,
        provider,
        lock_from_conf(store, holder_identity, conf),
        settings_from_conf(conf),
    )
    return NodePoolReconciler(
        store,
        service,
        requeue_after=group.reconcile_interval,
        watch_filter=group.watch_filter,
    )
