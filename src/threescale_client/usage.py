import structlog

from threescale_client.errors import InvalidMetricValueError
from threescale_client.models import Hierarchy, Metrics

logger = structlog.get_logger()


def add_metric(metrics: "Metrics", name: "str", delta: "int") -> "int":
    """
    adds delta to an existing metric, or creates the metric with
    delta as its value. Raises InvalidMetricValueError, leaving the
    metric untouched, when an existing value would turn negative.

    note - a new metric may be created with a negative delta, only
    the result of adding to an existing value is checked.
    """
    if name in metrics:
        new_value = metrics[name] + delta
        if new_value < 0:
            raise InvalidMetricValueError(name, new_value)
        metrics[name] = new_value
        return new_value

    metrics[name] = delta
    return delta


def set_metric(metrics: "Metrics", name: "str", value: "int") -> "None":
    """
    overwrites the metric value. Negative values are rejected.
    """
    if value < 0:
        raise InvalidMetricValueError(name, value)
    metrics[name] = value


def delete_metric(metrics: "Metrics", name: "str") -> "None":
    metrics.pop(name, None)


def copy_metrics(metrics: "Metrics") -> "Metrics":
    return dict(metrics)


def copy_hierarchy(hierarchy: "Hierarchy") -> "Hierarchy":
    """
    clones the hierarchy, each child list is copied as well.
    """
    return {parent: list(children) for parent, children in hierarchy.items()}


def add_hierarchy_to_metrics(metrics: "Metrics", hierarchy: "Hierarchy") -> "Metrics":
    """
    returns a copy of metrics where every parent is incremented by the
    usage of its children. Child values are read from a snapshot of the
    input so the order in which parents are visited does not matter.
    """
    snapshot = copy_metrics(metrics)
    result = copy_metrics(metrics)

    for parent, children in hierarchy.items():
        for child in children:
            if child not in snapshot:
                continue
            try:
                add_metric(result, parent, snapshot[child])
            except InvalidMetricValueError:
                # only reachable with negative child values
                logger.debug("hierarchy_add_skipped", parent=parent, child=child)

    return result


def subtract_hierarchy_from_metrics(
    metrics: "Metrics", hierarchy: "Hierarchy"
) -> "Metrics":
    """
    returns a copy of metrics where the usage of every child is removed
    from its parent. A parent that would turn negative is dropped
    entirely, its usage being unknown. Parents missing from metrics are
    never created, so a parent that add_hierarchy_to_metrics created
    comes back as 0 rather than being removed.
    """
    snapshot = copy_metrics(metrics)
    result = copy_metrics(metrics)

    for parent, children in hierarchy.items():
        for child in children:
            if parent not in result:
                break
            if child not in snapshot:
                continue
            try:
                add_metric(result, parent, -snapshot[child])
            except InvalidMetricValueError:
                logger.debug("hierarchy_parent_dropped", parent=parent, child=child)
                delete_metric(result, parent)

    return result
