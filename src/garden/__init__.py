"""Virtual garden deployment: etcd and kube-apiserver in a hosting cluster."""

from garden.context import OperationContext, build_context
from garden.exports import ExportsAccumulator
from garden.operation import Operation

__all__ = [
    'ExportsAccumulator',
    'Operation',
    'OperationContext',
    'build_context',
]
