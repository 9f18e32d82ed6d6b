from grooming.domain.scheduling import Scheduling

_TEMPLATES = {
    "scheduling.confirmation": "Your grooming appointment is booked for {when}. Services: {services}. Total: {total}.",
    "scheduling.reminder": "Reminder: your grooming appointment starts at {when}. Services: {services}.",
    "scheduling.cancellation": "Your grooming appointment for {when} has been cancelled.",
    "scheduling.rescheduled": "Your grooming appointment has been moved to {when}. Services: {services}.",
}
_FALLBACK = "Update on your grooming appointment for {when}."


def render_scheduling_message(type_key: str, scheduling: Scheduling) -> str:
    template = _TEMPLATES.get(type_key, _FALLBACK)
    message = template.format(
        when=scheduling.time_slot.start_at.strftime("%Y-%m-%d %H:%M UTC"),
        services=", ".join(service.name for service in scheduling.services),
        total=f"{scheduling.total_price:.2f}",
    )
    if scheduling.notes:
        message = f"{message} Notes: {scheduling.notes}"
    return message
