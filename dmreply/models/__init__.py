from dmreply.models.user import User, MembershipType
from dmreply.models.subscription import UserSubscription, SubscriptionStatus
from dmreply.models.ig_account import IGAccount
from dmreply.models.reply import Reply, Button, MatchType, ReplyType
from dmreply.models.execution_log import ExecutionLog

__all__ = ["User", "MembershipType", "UserSubscription", "SubscriptionStatus", "IGAccount", "Reply", "Button", "MatchType", "ReplyType", "ExecutionLog"]
