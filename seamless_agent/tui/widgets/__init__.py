from .plan_review import PlanReviewWidget
from .question import QuestionWidget
from .request_list import RequestListWidget
from .task_list import TaskListWidget

__all__ = ["PlanReviewWidget", "QuestionWidget", "RequestListWidget", "TaskListWidget"]
