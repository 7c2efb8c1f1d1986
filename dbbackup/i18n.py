"""
Operator-facing strings.

Only used for text shown to people (status lines, email subjects and
bodies); nothing in the backup logic branches on these values.
"""

import logging


logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = 'en'

MESSAGES = {
    'en': {
        'status.targets': '{count} database(s) to back up, {excluded} excluded',
        'status.attempt': 'Backing up {database} -> {target}',
        'status.success': 'Backup of {database} succeeded ({path})',
        'status.failure': 'Backup of {database} failed: {error}',
        'status.sweep': 'Removed {count} artifact(s) older than {days} day(s)',
        'status.sweep_disabled': 'Retention disabled, no artifacts removed',
        'status.sweep_held': 'Every backup failed, existing artifacts kept',
        'status.fatal': 'Backup aborted: {error}',
        'status.mail_failed': 'Could not send notification email: {error}',
        'status.done': 'Done: {successes} succeeded, {failures} failed',
        'mail.success.subject': 'Backup performed!',
        'mail.success.body': 'The backup of the databases has been successful!',
        'mail.success.attached': 'You will find a copy of the backup attached to this email.',
        'mail.failure.subject': 'Backup failed!',
        'mail.failure.body': 'The backup of databases has encountered errors:',
        'mail.failure.database': 'Database',
        'mail.failure.code': 'Error code',
        'mail.failure.message': 'Error message',
        'mail.fatal.body': 'The backup could not start:',
    },
    'fr': {
        'status.targets': '{count} base(s) à sauvegarder, {excluded} exclue(s)',
        'status.attempt': 'Sauvegarde de {database} -> {target}',
        'status.success': 'Sauvegarde de {database} réussie ({path})',
        'status.failure': 'Échec de la sauvegarde de {database} : {error}',
        'status.sweep': '{count} fichier(s) de plus de {days} jour(s) supprimé(s)',
        'status.sweep_disabled': 'Rétention désactivée, aucun fichier supprimé',
        'status.sweep_held': 'Toutes les sauvegardes ont échoué, fichiers existants conservés',
        'status.fatal': 'Sauvegarde interrompue : {error}',
        'status.mail_failed': "Impossible d'envoyer l'email de notification : {error}",
        'status.done': 'Terminé : {successes} réussie(s), {failures} en échec',
        'mail.success.subject': 'Sauvegarde effectuée !',
        'mail.success.body': 'La sauvegarde des bases de données a réussi !',
        'mail.success.attached': 'Vous trouverez une copie de la sauvegarde en pièce jointe.',
        'mail.failure.subject': 'Échec de la sauvegarde !',
        'mail.failure.body': 'La sauvegarde des bases de données a rencontré des erreurs :',
        'mail.failure.database': 'Base de données',
        'mail.failure.code': "Code d'erreur",
        'mail.failure.message': "Message d'erreur",
        'mail.fatal.body': "La sauvegarde n'a pas pu démarrer :",
    },
}


class Translator:
    """Looks up message keys for one language, falling back to English."""

    def __init__(self, language: str = DEFAULT_LANGUAGE):
        if language not in MESSAGES:
            logger.warning(f"Unsupported language {language!r}, falling back to {DEFAULT_LANGUAGE}")
            language = DEFAULT_LANGUAGE
        self.language = language
        self._messages = MESSAGES[language]

    def __call__(self, key: str, **kwargs) -> str:
        template = self._messages.get(key) or MESSAGES[DEFAULT_LANGUAGE].get(key, key)
        return template.format(**kwargs) if kwargs else template
