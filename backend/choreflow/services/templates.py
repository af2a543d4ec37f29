"""Built-in task templates for recurring routines"""
from typing import Dict, List

from choreflow.models.task import (
    RecurrenceRule,
    RecurrenceType,
    TaskCategory,
    TaskPriority,
    TaskTemplate,
    Weekday,
)

BEDROOM = TaskCategory(name="Bedroom", color="#9C27B0", icon="🛏️")
HYGIENE = TaskCategory(name="Hygiene", color="#00BCD4", icon="🦷")
SCHOOL = TaskCategory(name="School", color="#FF5722", icon="📚")
KITCHEN = TaskCategory(name="Kitchen", color="#4CAF50", icon="🍽️")
CHORES = TaskCategory(name="Chores", color="#795548", icon="🗑️")
HEALTH = TaskCategory(name="Health", color="#FF9800", icon="🏃")
ORGANIZATION = TaskCategory(name="Organization", color="#3F51B5", icon="📝")
PET_CARE = TaskCategory(name="Pet Care", color="#8BC34A", icon="🐕")

SCHOOL_DAYS = [Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY]


def _daily(time: str) -> RecurrenceRule:
    return RecurrenceRule(type=RecurrenceType.DAILY, time=time)


def _weekly(days: List[Weekday], time: str) -> RecurrenceRule:
    return RecurrenceRule(type=RecurrenceType.WEEKLY, days_of_week=days, time=time)


TASK_TEMPLATES: List[TaskTemplate] = [
    # Morning
    TaskTemplate(
        id="make-bed",
        title="Make Your Bed",
        description="Straighten sheets, arrange pillows neatly, and smooth out comforter",
        category=BEDROOM,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Take a photo showing the entire made bed",
        estimated_minutes=5,
        priority=TaskPriority.MEDIUM,
        points=10,
        tags=["morning", "daily", "bedroom"],
        recurrence=_daily("07:00"),
    ),
    TaskTemplate(
        id="brush-teeth",
        title="Brush Teeth (Morning)",
        description="Brush teeth for 2 minutes, including tongue",
        category=HYGIENE,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show clean sink and toothbrush put away",
        estimated_minutes=3,
        priority=TaskPriority.HIGH,
        points=10,
        tags=["morning", "daily", "hygiene"],
        recurrence=_daily("07:15"),
    ),
    TaskTemplate(
        id="pack-school-bag",
        title="Pack School Bag",
        description="Check homework, books, lunch, and supplies are packed",
        category=SCHOOL,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show organized backpack with everything packed",
        estimated_minutes=10,
        priority=TaskPriority.URGENT,
        points=15,
        tags=["morning", "school", "organization"],
        recurrence=_weekly(SCHOOL_DAYS, "07:30"),
    ),
    # School work
    TaskTemplate(
        id="homework-complete",
        title="Complete Homework",
        description="Finish all homework assignments for tomorrow",
        category=SCHOOL,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show completed homework with your name visible",
        estimated_minutes=60,
        priority=TaskPriority.URGENT,
        points=30,
        tags=["afternoon", "school", "homework"],
        recurrence=_weekly(SCHOOL_DAYS, "16:00"),
    ),
    TaskTemplate(
        id="read-20min",
        title="Read for 20 Minutes",
        description="Read a book for at least 20 minutes",
        category=SCHOOL,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show the book and page number you reached",
        estimated_minutes=20,
        priority=TaskPriority.MEDIUM,
        points=15,
        tags=["evening", "reading", "education"],
        recurrence=_daily("20:00"),
    ),
    # Chores
    TaskTemplate(
        id="empty-dishwasher",
        title="Empty Dishwasher",
        description="Put away all clean dishes from dishwasher",
        category=KITCHEN,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show empty dishwasher and closed cabinets",
        estimated_minutes=10,
        priority=TaskPriority.MEDIUM,
        points=15,
        tags=["chores", "kitchen", "daily"],
        recurrence=_daily("18:00"),
    ),
    TaskTemplate(
        id="take-out-trash",
        title="Take Out Trash",
        description="Empty all trash bins and take to outside bin",
        category=CHORES,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show new trash bag in kitchen bin",
        estimated_minutes=10,
        priority=TaskPriority.MEDIUM,
        points=15,
        tags=["chores", "weekly"],
        recurrence=_weekly([Weekday.TUESDAY, Weekday.FRIDAY], "18:30"),
    ),
    TaskTemplate(
        id="clean-room",
        title="Tidy Bedroom",
        description="Pick up clothes, organize desk, and vacuum floor",
        category=BEDROOM,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show clean floor and organized desk",
        estimated_minutes=20,
        priority=TaskPriority.MEDIUM,
        points=20,
        tags=["chores", "bedroom", "weekly"],
        recurrence=_weekly([Weekday.SATURDAY], "10:00"),
    ),
    # Personal care
    TaskTemplate(
        id="shower",
        title="Take a Shower",
        description="Shower with soap and shampoo, hang up towel after",
        category=HYGIENE,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show clean bathroom with towel hung up",
        estimated_minutes=15,
        priority=TaskPriority.HIGH,
        points=15,
        tags=["hygiene", "daily", "evening"],
        recurrence=_daily("19:30"),
    ),
    TaskTemplate(
        id="exercise-30min",
        title="30 Minutes Exercise",
        description="Do 30 minutes of physical activity",
        category=HEALTH,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show exercise area or activity tracker",
        estimated_minutes=30,
        priority=TaskPriority.MEDIUM,
        points=20,
        tags=["health", "exercise", "daily"],
        recurrence=_daily("17:30"),
    ),
    TaskTemplate(
        id="organize-desk",
        title="Organize Study Desk",
        description="Clear and organize desk, sharpen pencils, arrange supplies",
        category=ORGANIZATION,
        age_range=(11, 14),
        requires_photo=True,
        photo_instructions="Show clean and organized desk",
        estimated_minutes=15,
        priority=TaskPriority.LOW,
        points=15,
        tags=["organization", "bedroom", "weekly"],
        recurrence=_weekly([Weekday.SUNDAY], "15:00"),
    ),
    # Pets
    TaskTemplate(
        id="feed-pet",
        title="Feed Pet",
        description="Give pet fresh food and water",
        category=PET_CARE,
        age_range=(8, 17),
        requires_photo=True,
        photo_instructions="Show pet with fresh food and water bowls",
        estimated_minutes=5,
        priority=TaskPriority.HIGH,
        points=15,
        tags=["pets", "daily", "care"],
        recurrence=_daily("07:30"),
    ),
]

_TEMPLATES_BY_ID: Dict[str, TaskTemplate] = {template.id: template for template in TASK_TEMPLATES}


def get_template(template_id: str) -> TaskTemplate:
    """
    Raises:
        ValueError: if no template has this id
    """
    try:
        return _TEMPLATES_BY_ID[template_id]
    except KeyError:
        raise ValueError(f"Template not found: {template_id}")


def templates_by_category(category: str) -> List[TaskTemplate]:
    return [template for template in TASK_TEMPLATES if template.category.name == category]


def templates_for_age(age: int) -> List[TaskTemplate]:
    return [template for template in TASK_TEMPLATES if template.age_range[0] <= age <= template.age_range[1]]


def daily_routine_templates(age: int) -> List[TaskTemplate]:
    return [
        template for template in templates_for_age(age)
        if template.recurrence is not None and template.recurrence.type == RecurrenceType.DAILY
    ]
