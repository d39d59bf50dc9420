import pytest

from storyboard.models import Blueprint, EntityDraft


@pytest.fixture
def errors():
    return []


@pytest.fixture
def notices():
    return []


@pytest.fixture
def sleeps():
    """Records requested delays instead of waiting."""
    delays = []

    async def sleep(delay):
        delays.append(delay)

    sleep.delays = delays
    return sleep


@pytest.fixture
def robot_blueprint():
    return Blueprint(
        characters=[EntityDraft("Robot-7", "A rusty maintenance robot with one blue eye")],
        locations=[EntityDraft("Abandoned City", "Overgrown skyscrapers under a grey sky")],
        story_outline=["Robot-7 wakes up", "Robot-7 finds a flower"],
    )


@pytest.fixture
def robot_scenes():
    return [
        {
            "action": "Robot-7 powers on among the rubble",
            "setting": "city street",
            "cameraAngle": "Crane Down",
            "lighting": "cold dawn",
            "emotionalTone": "lonely",
            "characterNames": "Robot-7",
            "locationNames": ["Abandoned City"],
        },
        {
            "action": "Robot-7 kneels beside a flower",
            "cameraAngle": "Dolly In",
            "emotionalTone": "gentle",
            "characterNames": ["Robot-7"],
            "locationNames": ["Abandoned City"],
        },
        {
            "action": "An extra scene the duration has no room for",
            "characterNames": [],
            "locationNames": [],
        },
    ]
