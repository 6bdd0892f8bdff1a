from model_sync.run import main

main()
