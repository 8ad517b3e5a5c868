"""Exception hierarchy for the agent core."""


class AgentError(Exception):
    """Base class for agent errors."""


class TaskFetchError(AgentError):
    """Pending tasks could not be retrieved; the whole invocation aborts."""


class ProviderError(AgentError):
    """An external provider returned a non-success response."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class CampaignNotFoundError(AgentError):
    """CONTACT task names a campaign the organization does not have."""

    def __init__(self, campaign_name: str):
        super().__init__(f"Campaign '{campaign_name}' not found")
        self.campaign_name = campaign_name


class UnknownTaskTypeError(AgentError):
    def __init__(self, task_type: str):
        super().__init__(f"Unknown task type: {task_type}")
        self.task_type = task_type


class MissionNotFoundError(AgentError):
    def __init__(self, mission_id):
        super().__init__(f"Mission {mission_id} not found")
        self.mission_id = mission_id


class TaskNotFoundError(AgentError):
    def __init__(self, task_id):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class RetryNotAllowedError(AgentError):
    """Manual retry refused (task not failed, or retry budget exhausted)."""


class MissionNotRunnableError(AgentError):
    """Mission is paused or completed and cannot be triggered."""


class ContactNotFoundError(AgentError):
    def __init__(self, contact_id):
        super().__init__(f"Contacted lead {contact_id} not found")
        self.contact_id = contact_id
