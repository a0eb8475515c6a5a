"""Huddle sessions -- directory, space, watch, call and orchestration.

Provides the SessionOrchestrator state machine and the collaborators it
drives: DirectoryResolver, SpaceManager, JoinEventWatcher and
CallDispatcher.
"""
