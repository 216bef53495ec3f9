"""
Response templates for the scheduling assistant.

All user-facing Spanish text lives here. Numbers that depend on the
business rules (hours, notice, slot length) come from SchedulingPolicy
so the wording never drifts from the behavior.
"""

import logging
from datetime import datetime
from typing import Optional

from app.core.scheduling.availability import SchedulingPolicy, Slot
from app.core.scheduling.timeutils import (
    DateParts,
    TimeParts,
    date_parts_in_zone,
    days_between,
    format_date_for_humans,
    format_time_for_humans,
)

logger = logging.getLogger(__name__)

SHOW_MORE_HINT = 'Para ver más opciones responde "mostrar más horarios".'


class ResponseGenerator:
    """Builds the assistant's messages."""

    def __init__(self, policy: Optional[SchedulingPolicy] = None):
        self.policy = policy or SchedulingPolicy()

    # === Formatting helpers ===

    @property
    def business_hours(self) -> str:
        start = TimeParts(self.policy.business_start_hour, 0)
        end = TimeParts(self.policy.business_end_hour, 0)
        return f"{format_time_for_humans(start)} a {format_time_for_humans(end)}"

    @property
    def last_start(self) -> str:
        """Latest grid start whose appointment still ends by closing time."""
        policy = self.policy
        opening = policy.business_start_hour * 60
        latest = policy.business_end_hour * 60 - policy.appointment_minutes
        latest -= (latest - opening) % policy.slot_minutes
        return format_time_for_humans(TimeParts(latest // 60, latest % 60))

    @property
    def minimum_notice(self) -> str:
        minutes = self.policy.minimum_notice_minutes
        if minutes % 60:
            return f"{minutes} minutos"
        hours = minutes // 60
        return "1 hora" if hours == 1 else f"{hours} horas"

    def describe_slot_day(self, slot_date: DateParts, today: DateParts) -> str:
        """Label a day relative to today ("Hoy (...)", "Mañana (...)")."""
        human = format_date_for_humans(slot_date)
        diff = days_between(today, slot_date)
        if diff == 0:
            return f"Hoy ({human})"
        if diff == 1:
            return f"Mañana ({human})"
        return human

    def format_slots(
        self,
        slots: list[Slot],
        now: datetime,
        intro: Optional[str] = None,
        closing: Optional[str] = None,
    ) -> str:
        """Format a multi-day slot list.

        Args:
            slots: Slots to list
            now: Reference instant for the Hoy/Mañana labels
            intro: Heading line
            closing: Last line
        """
        lines = [intro or "Estas son las próximas opciones disponibles:"]
        for slot in slots:
            today = date_parts_in_zone(now, slot.time_zone)
            day_label = self.describe_slot_day(slot.date_parts, today)
            lines.append(
                f"• {day_label} de {format_time_for_humans(slot.time_parts)} "
                f"a {format_time_for_humans(slot.end_time_parts)}"
            )
        lines.append(closing or f"¿Alguno de esos horarios se acomoda? {SHOW_MORE_HINT}")
        return "\n".join(lines)

    def format_day_slots(
        self,
        slots: list[Slot],
        date_parts: DateParts,
        time_zone: str,
        closing: Optional[str] = None,
    ) -> str:
        """Format the slots of a single day (times only)."""
        lines = [
            f"Para el {format_date_for_humans(date_parts)} tengo estos horarios disponibles "
            f"de {self.policy.slot_minutes} minutos (hora local de {time_zone}):"
        ]
        for slot in slots:
            lines.append(
                f"• {format_time_for_humans(slot.time_parts)} a {format_time_for_humans(slot.end_time_parts)}"
            )
        lines.append(closing or f"Si alguno de esos horarios te funciona, dime y agendamos tu cita. {SHOW_MORE_HINT}")
        return "\n".join(lines)

    # === Availability ===

    def calendar_not_configured(self) -> str:
        return (
            "Aún no tengo acceso a la agenda para consultar los horarios disponibles. "
            "Solicita al equipo técnico que complete la configuración de Google Calendar."
        )

    def availability_intro(self, time_zone: str) -> str:
        return (
            f"Estos son los siguientes horarios disponibles de {self.policy.slot_minutes} minutos "
            f"(hora local de {time_zone}):"
        )

    def more_slots_intro(self, time_zone: str) -> str:
        return (
            f"Aquí tienes más horarios disponibles de {self.policy.slot_minutes} minutos "
            f"(hora local de {time_zone}):"
        )

    def no_availability(self) -> str:
        return (
            "Por ahora no veo espacios disponibles dentro del horario de atención. "
            "Intenta más tarde o indícame otro horario de preferencia."
        )

    def no_more_slots(self) -> str:
        return (
            "Por ahora no tengo más horarios disponibles dentro del horario de atención. "
            "Intenta más tarde o elige alguno de los horarios sugeridos anteriormente."
        )

    def show_more_without_cursor(self) -> str:
        return 'Pídeme primero "Horarios disponibles" para poder mostrarte las opciones más recientes.'

    def no_slots_on_date(self, date_parts: DateParts) -> str:
        return (
            f"Por ahora no veo horarios libres el {format_date_for_humans(date_parts)}. "
            'Puedes indicarme otra fecha o pedir "Horarios disponibles" para revisar opciones cercanas.'
        )

    def ask_new_date(self) -> str:
        return "Claro, dime la nueva fecha que quieres revisar y consulto los horarios disponibles."

    def earliest_slot(self, slot: Slot, now: datetime, on_date: bool) -> list[str]:
        """Offer a single earliest slot (optionally anchored to a chosen day)."""
        start = format_time_for_humans(slot.time_parts)
        end = format_time_for_humans(slot.end_time_parts)
        if on_date:
            return [
                f"El primer horario disponible para el {format_date_for_humans(slot.date_parts)} "
                f"es de {start} a {end} (hora local de {slot.time_zone}).",
                "Si te funciona, indícame esa hora o dime otra fecha para revisar nuevos horarios.",
            ]

        today = date_parts_in_zone(now, slot.time_zone)
        day_label = self.describe_slot_day(slot.date_parts, today)
        return [
            f"La siguiente opción disponible es {day_label} de {start} a {end} "
            f"(hora local de {slot.time_zone}).",
            "Si te funciona, dime esa hora o indícame una fecha específica para revisar más opciones.",
        ]

    def no_earliest_slot(self, date_parts: Optional[DateParts] = None) -> str:
        if date_parts:
            return (
                f"No veo horarios libres para el {format_date_for_humans(date_parts)}. "
                "Indícame otra fecha y vuelvo a revisar."
            )
        return (
            "Por ahora no encuentro horarios disponibles dentro del horario de atención. "
            "Dime una fecha específica y reviso opciones."
        )

    def slot_available(self, date_parts: DateParts, time_parts: TimeParts, time_zone: str) -> str:
        return (
            f"El {format_date_for_humans(date_parts)} a las {format_time_for_humans(time_parts)} "
            f'({time_zone}) está disponible. Si quieres agendarlo, dime "Agendar cita" '
            "o indícame si prefieres otro horario."
        )

    def slot_taken(self) -> str:
        return "Ya contamos con una cita en ese horario. Te comparto otras opciones disponibles para ese día."

    # === Parse and policy errors ===

    def invalid_zone(self) -> str:
        return "No reconocí esa zona horaria. Puedes indicarme una zona en formato “America/Mexico_City” o “UTC-5”."

    def invalid_time(self) -> str:
        return "No logré interpretar la hora. Dime algo como “11:30”, “1 pm” o “13 horas”."

    def clarify_time(self, suggestion: TimeParts) -> str:
        return (
            f"¿Te refieres a las {format_time_for_humans(suggestion)}? Nuestro horario de atención "
            f"es de {self.business_hours}. Elige un horario dentro de ese rango, por favor."
        )

    def time_out_of_range(self, attempted: TimeParts) -> str:
        return (
            f"El horario {format_time_for_humans(attempted)} queda fuera de nuestro servicio. "
            f"Podemos atenderte de {self.business_hours}; la última cita inicia a las {self.last_start}. "
            "Indícame otra hora dentro de ese rango."
        )

    def off_grid(self, attempted: TimeParts) -> str:
        return (
            f"Las citas inician cada {self.policy.slot_minutes} minutos, así que no puedo agendar a las "
            f"{format_time_for_humans(attempted)}. Elige uno de los horarios cercanos."
        )

    def unresolvable_datetime(self) -> str:
        return "No logré interpretar la combinación de fecha, hora y zona horaria. Vamos a elegir el horario nuevamente."

    def weekend(self) -> str:
        return "Los sábados y domingos no ofrecemos atención en tiempo real ni llamadas. Elige un día entre lunes y viernes."

    def insufficient_notice(self) -> str:
        return (
            f"Necesitamos al menos {self.minimum_notice} de anticipación para agendar. "
            "Indícame otro horario que cumpla con ese requisito."
        )

    def notice_alternatives_intro(self, time_zone: str) -> str:
        return (
            f"Estas opciones cumplen con la anticipación mínima de {self.minimum_notice} "
            f"(hora local de {time_zone}):"
        )

    def no_notice_alternatives(self) -> str:
        return (
            "Por ahora no hay espacios que cumplan con la anticipación mínima. "
            'Puedes pedir "Horarios disponibles" para revisar más opciones.'
        )

    def conflict(self) -> str:
        return "Ya contamos con una cita en ese horario. Elige otra hora disponible dentro del horario de atención."

    def conflict_alternatives_intro(self, time_zone: str) -> str:
        return (
            f"Estas opciones están libres en lapsos de {self.policy.slot_minutes} minutos "
            f"(hora local de {time_zone}):"
        )

    def no_conflict_alternatives(self) -> str:
        return (
            "Por ahora no encuentro horarios libres cercanos. "
            'Puedes pedir "Horarios disponibles" para revisar más opciones.'
        )

    def availability_check_failed(self) -> str:
        return (
            "No logré verificar la disponibilidad de ese horario. "
            "Intenta con otra hora o vuelve a intentarlo en unos minutos."
        )

    # === Booking steps ===

    def booking_unavailable(self) -> str:
        return (
            "Por ahora no puedo agendar automáticamente porque falta configurar la conexión con "
            "Google Calendar. Contacta al equipo técnico para completar la configuración."
        )

    def ask_name(self) -> str:
        return (
            "¡Perfecto! Empecemos con tu cita. Atendemos llamadas de lunes a viernes y necesitamos "
            f"al menos {self.minimum_notice} de anticipación. ¿Cuál es tu nombre completo?"
        )

    def ask_email(self) -> str:
        return "Gracias. ¿Cuál es tu correo electrónico para enviarte la confirmación?"

    def invalid_email(self) -> str:
        return "Parece que el correo no es válido. Intenta nuevamente con un formato como nombre@dominio.com."

    def ask_date(self) -> str:
        return (
            "Perfecto. ¿Para qué fecha necesitas la llamada? Puedes escribirla como “15 de mayo”, "
            "“15/05” o con tu formato preferido. Recuerda que las llamadas se agendan de lunes a viernes."
        )

    def invalid_date(self) -> str:
        return "No logré interpretar esa fecha. Puedes decirme “15 de mayo”, “15/05/2024” o frases como “mañana”."

    def no_slots_for_chosen_date(self, date_parts: DateParts) -> str:
        return (
            f"Por ahora no tengo horarios disponibles el {format_date_for_humans(date_parts)}. "
            "Indícame otra fecha de lunes a viernes y reviso nuevamente."
        )

    def ask_time(self, date_parts: DateParts) -> str:
        return (
            f"Tomé nota para el {format_date_for_humans(date_parts)}. ¿Cuál de esos horarios prefieres? "
            "Puedes decir “1 pm”, “13:30” o “mediodía”. Si necesitas otra zona horaria distinta a "
            f"{self.policy.default_timezone}, menciónalo."
        )

    def ask_date_again(self) -> str:
        return "Claro, dime la nueva fecha que te interesa. Recuerda que atendemos de lunes a viernes."

    def date_required(self) -> str:
        return "Vamos a elegir primero la fecha para poder revisar los horarios disponibles. Dime qué día prefieres."

    def ask_notes(self) -> str:
        return '¿Hay algo adicional que debamos tener en cuenta para la llamada? Puedes escribir "No" si no es necesario.'

    def cancelled(self) -> str:
        return 'He cancelado el proceso de agenda. Si deseas retomarlo, solo escribe "Agendar cita" cuando quieras.'

    # === Finalize ===

    def stored_datetime_invalid(self) -> str:
        return (
            "No pude interpretar la fecha y hora proporcionadas. Revisa el formato (AAAA-MM-DD para la "
            "fecha y HH:MM en formato de 24 horas) e intenta nuevamente."
        )

    def booking_confirmed(
        self,
        date_parts: DateParts,
        time_parts: TimeParts,
        time_zone: str,
        email: str,
        event_link: Optional[str] = None,
    ) -> list[str]:
        details = f"Te enviaremos la confirmación al correo {email}."
        if event_link:
            details += f" Puedes revisar el detalle aquí: {event_link}"
        return [
            f"¡Listo! Tu cita quedó agendada para el {format_date_for_humans(date_parts)} "
            f"a las {format_time_for_humans(time_parts)} ({time_zone}).",
            details,
        ]

    def booking_config_error(self) -> str:
        return (
            "No logré conectar con Google Calendar porque la configuración está incompleta. Por favor, "
            "solicita al equipo técnico completar las variables de entorno necesarias y vuelve a intentarlo."
        )

    def booking_failed(self) -> str:
        return (
            "Ocurrió un inconveniente al crear la cita. Notificaré al equipo para que continúe "
            "el proceso contigo manualmente."
        )

    def unexpected_error(self) -> str:
        return "Lo siento, ocurrió un problema al procesar tu mensaje. Intenta nuevamente en unos minutos."

    # === Calendar event ===

    def event_summary(self, name: str) -> str:
        return f"{self.policy.organization_name} - Llamada de orientación con {name}"

    def event_description(
        self,
        name: str,
        email: str,
        phone: Optional[str],
        notes: Optional[str],
    ) -> str:
        lines = [
            "Cita agendada automáticamente desde WhatsApp.",
            f"Nombre: {name}",
            f"Correo: {email}",
            f"Teléfono: {phone or 'No disponible'}",
        ]
        if notes:
            lines.append(f"Notas: {notes}")
        return "\n".join(lines)


# Singleton
_generator: Optional[ResponseGenerator] = None


def get_response_generator() -> ResponseGenerator:
    """Get singleton ResponseGenerator."""
    global _generator
    if _generator is None:
        _generator = ResponseGenerator(SchedulingPolicy.from_settings())
    return _generator
