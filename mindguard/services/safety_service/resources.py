"""Static emergency resource catalogue.

Nothing here performs I/O, so resources are available even when every
collaborator is down.
"""
from typing import Optional, Tuple

from mindguard.shared.models import EmergencyResource, RiskLevel


LIFELINE_988 = EmergencyResource(
    name="988 Suicide & Crisis Lifeline",
    phone="988",
    website="https://988lifeline.org",
    description="Free and confidential emotional support 24/7",
    availability="24/7",
    location="United States",
)

CRISIS_TEXT_LINE = EmergencyResource(
    name="Crisis Text Line",
    phone="Text HOME to 741741",
    website="https://www.crisistextline.org",
    description="Free, 24/7 support via text message",
    availability="24/7",
    location="United States, Canada, UK",
)

EMERGENCY_SERVICES = EmergencyResource(
    name="Emergency Services",
    phone="911",
    description="For immediate life-threatening emergencies (or your local emergency number)",
    availability="24/7",
)

IASP = EmergencyResource(
    name="International Association for Suicide Prevention",
    phone="Various by country",
    website="https://www.iasp.info/resources/Crisis_Centres/",
    description="Crisis centers and helplines worldwide",
    availability="Varies by location",
    location="International",
)

NAMI = EmergencyResource(
    name="National Alliance on Mental Illness (NAMI)",
    phone="1-800-950-NAMI (6264)",
    website="https://www.nami.org",
    description="Information, referrals and support for people with mental health conditions",
    availability="Monday-Friday 10am-10pm ET",
    location="United States",
)

INTERNATIONAL_STUDENT_SUPPORT = EmergencyResource(
    name="International Student Crisis Support",
    phone="1-800-366-8288",
    website="https://www.internationalstudents.org/crisis-support",
    description="Specialized support for international students",
    availability="24/7",
)

CAMPUS_COUNSELING = EmergencyResource(
    name="Campus Counseling Center",
    phone="Contact your university",
    description="On-campus mental health services",
    availability="Business hours (emergency services available 24/7)",
    location="Campus-based",
)

LOCATION_RESOURCES = {
    "canada": (
        EmergencyResource(
            name="Talk Suicide Canada",
            phone="1-833-456-4566",
            website="https://talksuicide.ca",
            description="24/7 bilingual suicide prevention service",
            availability="24/7",
            location="Canada",
        ),
    ),
    "uk": (
        EmergencyResource(
            name="Samaritans",
            phone="116 123",
            website="https://www.samaritans.org",
            description="Free support for anyone in emotional distress",
            availability="24/7",
            location="United Kingdom",
        ),
    ),
    "australia": (
        EmergencyResource(
            name="Lifeline Australia",
            phone="13 11 14",
            website="https://www.lifeline.org.au",
            description="24-hour crisis support and suicide prevention",
            availability="24/7",
            location="Australia",
        ),
    ),
}

# Attached by the lexical detector to crisis-tier matches
CRISIS_RESOURCES: Tuple[EmergencyResource, ...] = (
    LIFELINE_988,
    CRISIS_TEXT_LINE,
    IASP,
    EMERGENCY_SERVICES,
)


def resources_for_level(level: RiskLevel) -> Tuple[EmergencyResource, ...]:
    """Resources for an escalation response; never empty."""
    resources = [LIFELINE_988, CRISIS_TEXT_LINE]
    if level in (RiskLevel.HIGH, RiskLevel.CRISIS):
        resources.insert(0, EMERGENCY_SERVICES)
    resources.extend([INTERNATIONAL_STUDENT_SUPPORT, CAMPUS_COUNSELING])
    return tuple(resources)


def get_emergency_resources(location: Optional[str] = None) -> Tuple[EmergencyResource, ...]:
    """Full directory, with location-specific lines for canada, uk and australia."""
    resources = [LIFELINE_988, CRISIS_TEXT_LINE, NAMI, IASP]
    if location:
        resources.extend(LOCATION_RESOURCES.get(location.strip().lower(), ()))
    resources.append(CAMPUS_COUNSELING)
    return tuple(resources)
