from scheduler.model.scheduler import SchedulerConfig, TriggerDefinition

__all__ = ['SchedulerConfig', 'TriggerDefinition']
