from .classify import ClassifyStage, classify_directory, classify_text
from .plan import (
    COMPREHENSIVE_DELIMITER,
    CategoryPlan,
    build_comprehensive_message,
    plan_fixed_list,
    plan_knowledge,
    total_tasks,
)
from .sources import (
    FixedListTaskSource,
    KnowledgeTaskSource,
    TaskSource,
    cases_from_dicts,
    load_test_cases,
)


__all__ = [
    "ClassifyStage",
    "classify_directory",
    "classify_text",
    "COMPREHENSIVE_DELIMITER",
    "CategoryPlan",
    "build_comprehensive_message",
    "plan_fixed_list",
    "plan_knowledge",
    "total_tasks",
    "FixedListTaskSource",
    "KnowledgeTaskSource",
    "TaskSource",
    "cases_from_dicts",
    "load_test_cases",
]
