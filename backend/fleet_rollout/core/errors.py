from __future__ import annotations


class RolloutError(RuntimeError):
    status_code = 500

    def __init__(self, detail: str, *, status_code: int | None = None):
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail
        super().__init__(detail)


class NotFoundError(RolloutError):
    status_code = 404


class InvalidStateError(RolloutError):
    status_code = 409


class EmptyCollectionError(RolloutError):
    status_code = 422


class MembershipConflictError(RolloutError):
    status_code = 409


class MalformedInputError(RolloutError):
    status_code = 400


class UpdateNotFoundError(NotFoundError):
    def __init__(self, update_id: str):
        self.update_id = update_id
        super().__init__(f"Update not found: {update_id}")


class PlanNotFoundError(NotFoundError):
    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Plan not found: {plan_id}")


class BatchNotFoundError(NotFoundError):
    def __init__(self, batch_id: str, *, plan_id: str | None = None):
        self.batch_id = batch_id
        self.plan_id = plan_id
        if plan_id is None:
            super().__init__(f"Batch not found: {batch_id}")
        else:
            super().__init__(f"Batch {batch_id} not found or does not belong to plan {plan_id}")


class DeviceNotFoundError(NotFoundError):
    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device not found: {device_id}")


class PackageNotFoundError(NotFoundError):
    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"Package not found: {package_id}")


class ExecutionNotFoundError(NotFoundError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class ExecutionBatchNotFoundError(NotFoundError):
    def __init__(self, execution_batch_id: str):
        self.execution_batch_id = execution_batch_id
        super().__init__(f"Execution batch not found: {execution_batch_id}")


class CurrentBatchNotFoundError(ExecutionBatchNotFoundError):
    pass


class BatchConfigMissingError(NotFoundError):
    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch configuration not found: {batch_id}")


class PlanNotApprovedError(InvalidStateError):
    def __init__(self, plan_id: str, status: str):
        self.plan_id = plan_id
        self.status = status
        super().__init__(f"Only approved plans can be executed (plan {plan_id} is {status})")


class AlreadyInProgressError(InvalidStateError):
    def __init__(self, execution_id: str, status: str):
        self.execution_id = execution_id
        self.status = status
        super().__init__(
            f"Cannot start batch: execution {execution_id} is already in progress ({status})"
        )


class CurrentBatchNotCompleteError(InvalidStateError):
    def __init__(self, execution_batch_id: str, status: str):
        self.execution_batch_id = execution_batch_id
        self.status = status
        super().__init__(
            f"Cannot start next batch: current batch {execution_batch_id} is not completed ({status})"
        )


class NoExecutingBatchError(InvalidStateError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"No executing batch found for execution {execution_id}")


class NoBatchesError(EmptyCollectionError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"No batches found for execution {execution_id}")


class EmptyPlanError(EmptyCollectionError):
    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Cannot approve plan {plan_id} without batches")


class NoAffectedDevicesError(EmptyCollectionError):
    def __init__(self, update_id: str):
        self.update_id = update_id
        super().__init__(f"No affected devices found for update {update_id}")


class DeviceNotInBatchError(MembershipConflictError):
    def __init__(self, device_id: str, batch_id: str):
        self.device_id = device_id
        self.batch_id = batch_id
        super().__init__(f"Device {device_id} is not part of batch {batch_id}")


class MalformedVersionError(MalformedInputError):
    def __init__(self, version: object):
        self.version = version
        super().__init__(f"Malformed version string: {version!r}")
